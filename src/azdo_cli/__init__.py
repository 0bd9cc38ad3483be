"""azdo: Azure DevOps pipeline helper.

Resolves which pipeline to run and with which template parameters,
triggers the run and waits for it to finish.
"""

__version__ = "0.1.0"
