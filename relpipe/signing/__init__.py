# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Signing backends, credential resolution and the external tool runner.

This is operations infrastructure only: the cryptography happens inside the
external signing tools.
"""
