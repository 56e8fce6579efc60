"""
Test suite for the prload workload generator.

Everything here runs without a live target: the API is replaced by
:class:`tests.fakes.FakeApiClient`, and transport / docker seams are patched
with ``unittest.mock``.
"""
