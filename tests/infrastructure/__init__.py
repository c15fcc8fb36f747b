"""Test infrastructure - scripted backends and OSC doubles.

This package contains test support code, NOT actual tests.
"""
