"""Cache - encrypted review cache and session checkpoints"""
