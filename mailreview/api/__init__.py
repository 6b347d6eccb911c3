"""Local HTTP API used by the mail client extension"""
