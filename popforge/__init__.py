"""popforge -- one pipeline to scaffold, build, test and deploy ink! contracts
and parachain node projects.

Entry point: :func:`popforge.pipeline.main` (the ``popforge`` command).
"""

__version__ = "0.1.0"
