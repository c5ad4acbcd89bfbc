import os.path
import re

from paver.tasks import task
from paver.easy import sh


def tell(x):
    print()
    print(("-"*10)+ str(x) + ("-"*10))
    print()

@task
def build(quiet=True):
    """ Builds the clcred source distribution. """
    tell("Build dist")
    sh('python setup.py sdist', capture=quiet)

@task
def test(quiet=False):
    """ Runs the clcred test suite, with coverage. """
    tell("Run tests")
    sh('pytest -v --cov=clcred --cov-report=term-missing clcred', capture=quiet)

@task
def version(quiet=False):
    """ Prints the clcred version declared in the package. """
    lib = open(os.path.join("clcred", "__init__.py")).read()
    v = re.findall("VERSION.*=.*['\"](.*)['\"]", lib)[0]
    tell("clcred %s" % v)

@task
def lint(quiet=False):
    """ Run the python linter on clcred, ignoring the inline tests. """
    tell("Run pylint on the library")
    sh('PYTHONPATH=utils:$PYTHONPATH pylint --load-plugins ignoretest clcred', capture=quiet)

@task
def wc(quiet=False):
    """ Count the clcred library and example code lines. """
    tell("Counting code lines")

    print("\nLibrary code:")
    sh('wc -l clcred/*.py', capture=quiet)

    print("\nExample code:")
    sh('wc -l examples/*.py', capture=quiet)

    print("\nAdministration code:")
    sh('wc -l pavement.py setup.py utils/ignoretest.py', capture=quiet)
