# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/utils/base_models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Base model for every persisted or wire-visible PDP record.

Policy records are stored by the admin application in a JSON shape with
camelCase keys (``organizationId``, ``fieldPermissions``...).  Models derived
from ``BaseModelWithConfigDict`` accept either spelling and dump camelCase.

Examples:
    >>> class Demo(BaseModelWithConfigDict):
    ...     organization_id: str
    >>> Demo(organizationId="org-1").organization_id
    'org-1'
    >>> Demo(organization_id="org-2").model_dump(by_alias=True)
    {'organizationId': 'org-2'}
"""

# Third-Party
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseModelWithConfigDict(BaseModel):
    """Base model with camelCase aliases and name population enabled."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
        str_strip_whitespace=True,
    )

    def to_dict(self, use_alias: bool = True) -> dict:
        """Dump the model to a JSON-compatible dict.

        Args:
            use_alias: Emit camelCase keys when True.

        Returns:
            dict: JSON-compatible representation of the model.
        """
        return self.model_dump(mode="json", by_alias=use_alias)
