"""
Test Suite for Deployer

Unit tests run against in-memory fakes of the GitHub and git capabilities
(see tests/fakes.py); the REST client is tested with httpx.MockTransport.
"""
