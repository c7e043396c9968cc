# SPDX-License-Identifier: Apache-2.0

"""
DamDoh API - agricultural networking and marketplace backend.
"""

__version__ = "1.0.0"
