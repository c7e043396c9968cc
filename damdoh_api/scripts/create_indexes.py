#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Ensure the MongoDB indexes the DamDoh API queries rely on.

Reads MONGODB_URI and MONGODB_DATABASE. Run with
``python -m damdoh_api.scripts.create_indexes`` after each deploy; index
creation is idempotent.
"""

import sys
import logging

from pymongo.errors import PyMongoError

from damdoh_api.services.mongodb import MongoDBService

logger = logging.getLogger("damdoh_api.scripts.create_indexes")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')

    mongodb_service = MongoDBService()
    health = mongodb_service.health_check()
    if health['status'] != 'healthy':
        logger.error(f"Cannot reach {mongodb_service.database_name}: {health.get('error')}")
        return 1

    try:
        count = mongodb_service.create_indexes()
    except PyMongoError as e:
        logger.error(f"Index creation failed: {e}")
        return 1
    finally:
        mongodb_service.close_connection()

    logger.info(f"{count} indexes ensured on {mongodb_service.database_name} (MongoDB {health.get('version')})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
