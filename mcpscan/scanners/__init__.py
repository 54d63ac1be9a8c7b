"""Capability scanners run by agents against checked-out trees."""
