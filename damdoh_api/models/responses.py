# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response bodies that are built as models rather than plain dicts.
"""

from typing import List, Optional, Dict
from pydantic import BaseModel, Field
from .base import CamelModel


class HalLink(BaseModel):
    """One entry of a ``_links`` object; unset attributes are omitted when dumped."""

    href: str
    method: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    templated: Optional[bool] = None


class AuthUserResponse(CamelModel):
    id: str
    email: str
    display_name: str
    primary_role: str = Field(..., description="Stakeholder role")
    permissions: List[str] = Field(default_factory=list, description="Permissions granted by the role")


class LoginResponse(CamelModel):
    """Token pair returned by register and login."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    user: AuthUserResponse
    links: Dict[str, HalLink] = Field(default_factory=dict, alias="_links")


class RefreshTokenResponse(CamelModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    links: Dict[str, HalLink] = Field(default_factory=dict, alias="_links")
