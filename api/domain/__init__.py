# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Domain package - Pure decision logic for the request lifecycle, no side effects.
"""
