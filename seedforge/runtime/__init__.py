# SPDX-License-Identifier: Apache-2.0
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Shared runtime for the SeedForge pipeline: telemetry, configuration, oracle
adapters and the evolution gates.
"""

from pathlib import Path

# Element tag stamped on metrics records written by the pipeline.
ELEMENT_ID = "Earth"

# Checkout root; the metrics ledger defaults to ``<root>/reports``.
ROOT_DIR = Path(__file__).resolve().parents[2]

__all__ = ["ELEMENT_ID", "ROOT_DIR"]
