"""Service layer for the blob store.

Routes are transport-only; each calls exactly one service function.
"""
