"""Dividend computation, distribution and payment lifecycle API"""
