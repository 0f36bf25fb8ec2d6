"""
Artifact (de)serialization.

This subpackage turns classifiers into storage sub-keys and exportable file
pairs, and back, so that lifecycle code only deals with artifact ids.
"""
