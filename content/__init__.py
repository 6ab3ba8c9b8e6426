"""content/ -- Articles, threaded comments and comment likes.

Layer rule: content/ may import from core/ and auth/ (guard types only).
It does NOT import from api/.
"""
