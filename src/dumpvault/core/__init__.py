"""Backup engine core: configuration, engines, executors"""
