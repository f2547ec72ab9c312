# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Vehicle premium rating engine.

Resolves the rating factors that apply to a vehicle, insurance type and
policy date, validates that the rating data is complete and consistent,
and computes the auditable premium multiplier breakdown.
"""

__version__ = "0.1.0"
