# This file is part of awsmgr. See LICENSE file for license information.
"""Lightsail support."""
