#!/usr/bin/env python3

"""
Docker Hub Mirror

Mirrors public Docker Hub repositories into a personal namespace, copying new
tags and re-syncing mutable tags whose digest changed upstream.
"""

__version__ = "0.3.0"
__author__ = "Hub Mirror Project"
