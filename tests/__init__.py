"""Test suite for formtree.

This package contains tests for:
- Config cascade (resolution, overrides, invalidation, re-parenting)
- Hook pipelines (prop, input, commit, message, classes)
- Class composition (priority, sources, $reset)
- Message store and externally supplied errors
- Validation engine (parsing, rules, behaviors, async supersession)
- Plugins, libraries and definitions
- Event emission and bubbling
- Integration scenarios across whole node trees
"""
