"""Crypto - content digests, key derivation, authenticated encryption"""
