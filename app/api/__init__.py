# app/api/__init__.py
# routery: carts (rekoncyliator koszyka), inventory (stany), health
