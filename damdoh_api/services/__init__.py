# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - storage, caching, messaging and credentials.
"""

from .mongodb import MongoDBService, PaginationResult, DuplicateDocumentError
from .amqp import AMQPService, AMQPConfig, PublishResult, create_amqp_service

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "DuplicateDocumentError",
    "AMQPService",
    "AMQPConfig",
    "PublishResult",
    "create_amqp_service"
]
