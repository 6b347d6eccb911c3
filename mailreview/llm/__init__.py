"""LLM - remote review service client and prompt assembly"""
