## Usage:
# export PYTHONPATH=`pwd`/utils:$PYTHONPATH
# pylint --load-plugins ignoretest clcred
#
# Hides the inline tests (test_* functions and pytest fixtures) of the
# clcred modules from the linter.

from astroid import MANAGER
from astroid import nodes


def register(linter):
    pass


def _is_fixture(node):
    decorators = node.decorators.nodes if node.decorators else []
    return any("fixture" in d.as_string() for d in decorators)


def transform(module):
    for node in list(module.body):
        if isinstance(node, nodes.FunctionDef) and \
                (node.name.startswith("test_") or _is_fixture(node)):
            module.body.remove(node)


MANAGER.register_transform(nodes.Module, transform)
