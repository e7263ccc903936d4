"""
Services for SOSTrack
"""
