"""
learntrack
Progress aggregation and proctoring-integrity scoring for the learning platform.
"""
