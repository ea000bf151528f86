"""
Careline - proactive care engine
QOF / NICE indicator evaluation over patient records and outbound call responses
"""
__version__ = "1.0.0"
