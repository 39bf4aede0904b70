import setuptools


setuptools.setup(
    name='ircwire',
    version='0.1.0',
    packages=['ircwire'],
    package_dir={'': 'src'},
    python_requires='>=3.10',
    classifiers=[
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    install_requires=[
        'click>=7.0',
        'attrs>=19.1',
        'toml',
        'schematics',
        'rollbar',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    entry_points={
        'console_scripts': [
            'ircwire = ircwire.cli:main',
            'ircwire_util = ircwire.cli:util',
        ],
    },
)
