from setuptools import setup

setup(
    name='cartevm',
    version='0.1.0',
    description='Per-opcode gas and timing micro-benchmarks for the EVM',
    package_dir={'cartevm': 'src/cartevm'},
    packages=['cartevm', 'cartevm.evm', 'cartevm.cli'],
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        'click>=7.0',
        'rich>=9.0',
        'pycryptodome>=3.10',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'cartevm = cartevm.cli.main:cli'
        ]
    },
    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
