from setuptools import setup

setup(name='icsevent',
      version='0.1.0',
      description='iCalendar VEVENT parser and serializer',
      long_description=open('README.rst').read(),
      author='Jochen Sprickerhof',
      license='GPLv3+',
      keywords=['iCalendar', 'VEVENT', 'VALARM'],
      classifiers=[
          'Programming Language :: Python',
          'Development Status :: 4 - Beta',
          'Environment :: Console',
          'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
          'Topic :: Office/Business :: Scheduling',
          'Topic :: Software Development :: Libraries :: Python Modules',
      ],

      python_requires='>=3.10',
      install_requires=['python-dateutil', 'tzdata', 'vobject'],
      extras_require={'test': ['pytest']},
      py_modules=['icsevent', 'ics_kv'],

      entry_points={
          'console_scripts': [
              'icsevent = icsevent:main',
          ]
      },)
