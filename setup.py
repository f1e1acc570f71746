from setuptools import setup
from pathlib import Path

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(name='machpatch',
      version='0.1.0',
      description='Mach-O object model: parse, resolve, patch and rebuild Mach-O images.',
      long_description=long_description,
      long_description_content_type='text/markdown',
      python_requires='>=3.6',
      install_requires=['Pygments'],
      packages=['libmach', 'machpatch_macho', 'machpatch'],
      package_dir={
            'libmach': 'src/libmach',
            'machpatch_macho': 'src/machpatch_macho',
            'machpatch': 'src/machpatch'
      },
      classifiers=[
            'Programming Language :: Python :: 3',
            'License :: OSI Approved :: MIT License',
            'Operating System :: OS Independent'
      ],
      entry_points={
            'console_scripts': [
                  'machpatch = machpatch.cli:main',
            ],
      }
      )
