# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the DamDoh platform.

Pure business rules for the marketplace, finance, insurance, traceability,
notification and dashboard features. Nothing in this package touches the
database or the request context.
"""
