# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .models import (
    Base,
    Credential,
    CredentialGroup,
    FundingRecord,
    GroupIDList,
    ModelPolicy,
    PrepaidCard,
    User,
    UserGroup,
)
from .session import create_engine_from_settings, create_schema, create_session_factory

__all__ = [
    "Base",
    "Credential",
    "CredentialGroup",
    "FundingRecord",
    "GroupIDList",
    "ModelPolicy",
    "PrepaidCard",
    "User",
    "UserGroup",
    "create_engine_from_settings",
    "create_schema",
    "create_session_factory",
]
