"""
Release Planner
Blueprint registry.
"""
