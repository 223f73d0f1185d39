#!/usr/bin/env python3

import pathlib

from setuptools import setup, find_packages


PROJ_ROOT = pathlib.Path(__file__).parent


def readme():
    with open(PROJ_ROOT / 'README.rst', 'r', encoding='utf-8') as readme:
        return readme.read()


setup(
    name='tdingest',
    version='0.3.0',
    description='Python client for ingesting time-series measurements over HTTP',
    long_description=readme(),
    long_description_content_type='text/x-rst',
    platforms=['any'],
    python_requires='>=3.8',
    install_requires=['requests'],
    extras_require={
        'dataframe': ['pandas', 'numpy'],
        'test': ['pytest', 'pandas', 'numpy']},
    zip_safe=False,
    package_dir={'': 'src'},
    packages=find_packages('src', exclude=['test']))
