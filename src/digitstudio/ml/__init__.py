"""
PyTorch classifier and training samples.

The lifecycle package only relies on the build/fit/predict and weight
serialization hooks exposed here.
"""
