"""Service-wide utilities"""
