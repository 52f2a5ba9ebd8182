"""Catalog, verification, retention, scheduling and notifications"""
