#!/usr/bin/env python

from setuptools import setup

import clcred

setup(name='clcred',
      version=clcred.VERSION,
      description='Anonymous attribute credentials in the Camenisch-Lysyanskaya style',
      packages=['clcred'],
      license="2-clause BSD",
      long_description="""Issue, update and selectively disclose anonymous attribute credentials, with pseudonyms and commitments in Schnorr groups and CL signatures over a special RSA modulus, using petlib's big numbers.""",

      tests_require = [
            "pytest >= 2.5.0",
            "paver >= 1.2.3",
            "pytest-cov >= 1.8.1",
            ],
      install_requires=[
            "petlib >= 0.0.45",
            "msgpack >= 1.0.0",
            "pytest >= 2.5.0",
      ],
      extras_require={
            "test": [
                "pytest >= 2.5.0",
                "paver >= 1.2.3",
                "pytest-cov >= 1.8.1",
                "pylint",
            ],
      },
      zip_safe=False,
)
