"""
HTTP interface for the PostCare scheduling system
"""
