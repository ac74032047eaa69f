"""
Pipeline driver: stage sequencing and prediction passes
"""
