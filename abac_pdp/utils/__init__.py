# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/utils/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared helpers for the policy decision point.
"""
