"""DHRUVA - Services"""
