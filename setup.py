from setuptools import find_packages, setup

setup(
    name='certificate-checker',
    version='1.0.0',
    author='Grégoire Compagnon (obeone)',
    url='https://github.com/obeone/certificate-checker',
    license='MIT',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    python_requires='>=3.9',
    install_requires=[
        'cryptography>=43',
        'coloredlogs',
        'shtab',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'certificate-checker = certificate_checker.main:main',
        ],
    },
)
