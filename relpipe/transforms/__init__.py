# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Artifact transforms: debug-map stripping, signing and signature verification.

The registry decides which transforms exist and in what order they run;
`build_default_registry()` returns every built-in one.
"""
