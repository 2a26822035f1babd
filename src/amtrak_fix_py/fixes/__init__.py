"""
Detectors and corrections for the known defects of the Amtrak GTFS schedule
feed, applied as named rules by the feed correction pipeline.
"""
