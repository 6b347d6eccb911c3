"""Infrastructure - environment loading and SQLite plumbing"""
