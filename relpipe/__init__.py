# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""relpipe: post-processing pipeline for release build outputs."""

__version__ = "0.1.0"
