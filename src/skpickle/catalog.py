"""The registry table: which serialized types can be decoded, and how.

This module is data. ``TYPES`` lists the canonical ``(module, name)`` of
every supported type together with its strategy; ``CLASS_ALIASES`` and
``MODULE_ALIASES`` enumerate the other names under which producers have
written the same types (``*CV`` estimator variants, renamed private
modules of later scikit-learn and numpy releases, vendored joblib,
Python 2 builtins).
"""

import collections

from .arrays import frombuffer
from .records import DType, NDArray, Record, Scalar
from .registry import RegistryBuilder, TypeRegistry
from .strategies import (ArrayStrategy, CallableStrategy, ExtensionStrategy,
                         GenericStrategy, buffer_from, codecs_encode,
                         reconstructor)


DTYPE_STATE = ('version', 'byteorder', 'subdescr', 'names', 'fields',
               'elsize', 'alignment', 'flags', 'metadata')
NDARRAY_STATE = ('version', 'shape', 'dtype', 'fortran_order', 'data')
RANDOM_STATE = ('bit_generator', 'key', 'pos', 'has_gauss', 'cached_gaussian')
SPLITTER_ARGS = ('criterion', 'max_features', 'min_samples_leaf', 'min_weight_leaf', 'random_state')
BINARY_TREE_STATE = ('data', 'idx_array', 'node_data', 'node_bounds', 'leaf_size',
                     'n_levels', 'n_leaves', 'n_splits', 'n_trims', 'n_calls', 'dist_metric')


def _ext(target, arg_names=(), state_names=(), record_class=Record):
    return ExtensionStrategy(target, record_class, tuple(arg_names), tuple(state_names))


def _estimators(module, public_module, *names):
    return [(module, name, GenericStrategy(f'{public_module}.{name}')) for name in names]


def _type_values(module, *names):
    # types that only ever appear as values (dtype=numpy.float64) or as constructor arguments
    return [(module, name, GenericStrategy(f'{module}.{name}')) for name in names]


TYPES = [
    # Python builtins referenced by protocols 0 to 2
    ('builtins', 'object', CallableStrategy('builtins.object', object)),
    ('builtins', 'set', CallableStrategy('builtins.set', set)),
    ('builtins', 'frozenset', CallableStrategy('builtins.frozenset', frozenset)),
    ('builtins', 'list', CallableStrategy('builtins.list', list)),
    ('builtins', 'tuple', CallableStrategy('builtins.tuple', tuple)),
    ('builtins', 'dict', CallableStrategy('builtins.dict', dict)),
    ('builtins', 'bytes', CallableStrategy('builtins.bytes', buffer_from(bytes))),
    ('builtins', 'bytearray', CallableStrategy('builtins.bytearray', buffer_from(bytearray))),
    ('builtins', 'complex', CallableStrategy('builtins.complex', complex)),
    ('copyreg', '_reconstructor', CallableStrategy('copyreg._reconstructor', reconstructor)),
    ('_codecs', 'encode', CallableStrategy('_codecs.encode', codecs_encode)),
    ('collections', 'OrderedDict', CallableStrategy('collections.OrderedDict', collections.OrderedDict)),

    # joblib array containers
    ('joblib.numpy_pickle', 'NumpyArrayWrapper', ArrayStrategy('numpy.ndarray', 'inline')),
    ('joblib.numpy_pickle', 'NDArrayWrapper', ArrayStrategy('numpy.ndarray', 'sibling')),

    # numpy
    ('numpy', 'dtype', _ext('numpy.dtype', ('obj', 'align', 'copy'), DTYPE_STATE, DType)),
    ('numpy.core', '_ufunc_reconstruct', _ext('numpy.ufunc', ('module', 'name'))),
    ('numpy.core.multiarray', '_reconstruct',
        _ext('numpy.ndarray', ('subtype', 'initial_shape', 'initial_dtype'), NDARRAY_STATE, NDArray)),
    ('numpy.core.multiarray', 'scalar', _ext('numpy.generic', ('dtype', 'data'), (), Scalar)),
    ('numpy.core.numeric', '_frombuffer', CallableStrategy('numpy.ndarray', frombuffer)),
    ('numpy.random', '__RandomState_ctor', _ext('numpy.random.RandomState', (), RANDOM_STATE)),
    *_type_values('numpy', 'ndarray', 'bool_', 'object_', 'str_', 'bytes_',
                  'int8', 'int16', 'int32', 'int64', 'uint8', 'uint16', 'uint32', 'uint64',
                  'float16', 'float32', 'float64', 'complex64', 'complex128'),

    # scipy
    *_estimators('scipy.sparse.csr', 'scipy.sparse', 'csr_matrix'),

    # scikit-learn estimators and transformers
    *_estimators('sklearn.cluster.k_means_', 'sklearn.cluster', 'KMeans', 'MiniBatchKMeans'),
    *_estimators('sklearn.decomposition.incremental_pca', 'sklearn.decomposition', 'IncrementalPCA'),
    *_estimators('sklearn.decomposition.pca', 'sklearn.decomposition', 'PCA'),
    *_estimators('sklearn.discriminant_analysis', 'sklearn.discriminant_analysis', 'LinearDiscriminantAnalysis'),
    *_estimators('sklearn.ensemble.bagging', 'sklearn.ensemble', 'BaggingClassifier', 'BaggingRegressor'),
    *_estimators('sklearn.ensemble.forest', 'sklearn.ensemble',
                 'ExtraTreesClassifier', 'ExtraTreesRegressor',
                 'RandomForestClassifier', 'RandomForestRegressor'),
    *_estimators('sklearn.ensemble.gradient_boosting', 'sklearn.ensemble',
                 'BinomialDeviance', 'ExponentialLoss', 'MultinomialDeviance',
                 'GradientBoostingClassifier', 'GradientBoostingRegressor',
                 'LogOddsEstimator', 'MeanEstimator', 'PriorProbabilityEstimator',
                 'QuantileEstimator', 'ScaledLogOddsEstimator', 'ZeroEstimator'),
    *_estimators('sklearn.ensemble.voting_classifier', 'sklearn.ensemble', 'VotingClassifier'),
    *_estimators('sklearn.linear_model.base', 'sklearn.linear_model', 'LinearRegression'),
    *_estimators('sklearn.linear_model.coordinate_descent', 'sklearn.linear_model', 'ElasticNet', 'Lasso'),
    *_estimators('sklearn.linear_model.logistic', 'sklearn.linear_model', 'LogisticRegression'),
    *_estimators('sklearn.linear_model.ridge', 'sklearn.linear_model', 'Ridge', 'RidgeClassifier'),
    *_estimators('sklearn.linear_model.stochastic_gradient', 'sklearn.linear_model',
                 'SGDClassifier', 'SGDRegressor'),
    *_estimators('sklearn.naive_bayes', 'sklearn.naive_bayes', 'GaussianNB'),
    *_estimators('sklearn.neighbors.classification', 'sklearn.neighbors', 'KNeighborsClassifier'),
    *_estimators('sklearn.neighbors.regression', 'sklearn.neighbors', 'KNeighborsRegressor'),
    *_estimators('sklearn.neural_network.multilayer_perceptron', 'sklearn.neural_network',
                 'MLPClassifier', 'MLPRegressor'),
    *_estimators('sklearn.pipeline', 'sklearn.pipeline', 'Pipeline', 'FeatureUnion'),
    *_estimators('sklearn.preprocessing._function_transformer', 'sklearn.preprocessing', 'FunctionTransformer'),
    *_estimators('sklearn.preprocessing.data', 'sklearn.preprocessing',
                 'Binarizer', 'MaxAbsScaler', 'MinMaxScaler', 'OneHotEncoder',
                 'RobustScaler', 'StandardScaler'),
    *_estimators('sklearn.preprocessing.imputation', 'sklearn.preprocessing', 'Imputer'),
    *_estimators('sklearn.preprocessing.label', 'sklearn.preprocessing', 'LabelBinarizer', 'LabelEncoder'),
    *_estimators('sklearn.svm.classes', 'sklearn.svm', 'LinearSVR', 'NuSVC', 'NuSVR', 'OneClassSVM', 'SVC', 'SVR'),
    *_estimators('sklearn.tree.tree', 'sklearn.tree',
                 'DecisionTreeClassifier', 'DecisionTreeRegressor',
                 'ExtraTreeClassifier', 'ExtraTreeRegressor'),

    # scikit-learn compiled internals
    ('sklearn.linear_model.sgd_fast', 'Hinge', _ext('sklearn.linear_model.Hinge', ('threshold',))),
    ('sklearn.linear_model.sgd_fast', 'Log', _ext('sklearn.linear_model.Log')),
    ('sklearn.linear_model.sgd_fast', 'ModifiedHuber', _ext('sklearn.linear_model.ModifiedHuber')),
    ('sklearn.linear_model.sgd_fast', 'SquaredHinge', _ext('sklearn.linear_model.SquaredHinge', ('threshold',))),
    ('sklearn.linear_model.sgd_fast', 'SquaredLoss', _ext('sklearn.linear_model.SquaredLoss')),
    ('sklearn.linear_model.sgd_fast', 'Huber', _ext('sklearn.linear_model.Huber', ('c',))),
    ('sklearn.linear_model.sgd_fast', 'EpsilonInsensitive',
        _ext('sklearn.linear_model.EpsilonInsensitive', ('epsilon',))),
    ('sklearn.neighbors.dist_metrics', 'newObj',
        _ext('sklearn.neighbors.DistanceMetric', ('metric_class',), ('p', 'vec', 'mat'))),
    *_type_values('sklearn.neighbors.dist_metrics',
                  'EuclideanDistance', 'SEuclideanDistance', 'ManhattanDistance', 'ChebyshevDistance',
                  'MinkowskiDistance', 'WMinkowskiDistance', 'MahalanobisDistance'),
    ('sklearn.neighbors.kd_tree', 'newObj',
        _ext('sklearn.neighbors.BinaryTree', ('tree_class',), BINARY_TREE_STATE)),
    *_type_values('sklearn.neighbors.kd_tree', 'KDTree'),
    ('sklearn.tree._tree', 'BestSplitter', _ext('sklearn.tree.BestSplitter', SPLITTER_ARGS)),
    ('sklearn.tree._tree', 'PresortBestSplitter', _ext('sklearn.tree.PresortBestSplitter', SPLITTER_ARGS)),
    ('sklearn.tree._tree', 'ClassificationCriterion',
        _ext('sklearn.tree.ClassificationCriterion', ('n_outputs', 'n_classes'))),
    ('sklearn.tree._tree', 'RegressionCriterion',
        _ext('sklearn.tree.RegressionCriterion', ('n_outputs', 'n_samples'))),
    ('sklearn.tree._tree', 'Tree', _ext('sklearn.tree.Tree', ('n_features', 'n_classes', 'n_outputs'))),

    # third-party wrappers
    *_estimators('sklearn_pandas', 'sklearn_pandas', 'DataFrameMapper'),
    *_estimators('sklearn_pandas.pipeline', 'sklearn_pandas', 'TransformerPipeline'),
    *_estimators('sklearn2pmml.decoration', 'sklearn2pmml.decoration', 'CategoricalDomain', 'ContinuousDomain'),
    *_estimators('xgboost.core', 'xgboost', 'Booster'),
    *_estimators('xgboost.sklearn', 'xgboost', 'XGBClassifier', 'XGBRegressor'),
]

# (module, name) -> (module, name) of an entry in TYPES
CLASS_ALIASES = [
    ('sklearn.linear_model.coordinate_descent', 'ElasticNetCV', 'sklearn.linear_model.coordinate_descent', 'ElasticNet'),
    ('sklearn.linear_model.coordinate_descent', 'LassoCV', 'sklearn.linear_model.coordinate_descent', 'Lasso'),
    ('sklearn.linear_model.logistic', 'LogisticRegressionCV', 'sklearn.linear_model.logistic', 'LogisticRegression'),
    ('sklearn.linear_model.ridge', 'RidgeCV', 'sklearn.linear_model.ridge', 'Ridge'),
    ('sklearn.linear_model.ridge', 'RidgeClassifierCV', 'sklearn.linear_model.ridge', 'RidgeClassifier'),
    ('sklearn.tree._tree', 'Gini', 'sklearn.tree._tree', 'ClassificationCriterion'),
    ('sklearn.tree._tree', 'Entropy', 'sklearn.tree._tree', 'ClassificationCriterion'),
    ('sklearn.tree._tree', 'MSE', 'sklearn.tree._tree', 'RegressionCriterion'),
    ('sklearn.tree._tree', 'FriedmanMSE', 'sklearn.tree._tree', 'RegressionCriterion'),
    ('sklearn.neighbors.kd_tree', 'BinaryTree', 'sklearn.neighbors.kd_tree', 'KDTree'),
]

# Every name of the second module is also reachable under the first one.
# A third element restricts the alias to the listed names.
MODULE_ALIASES = [
    ('__builtin__', 'builtins'),
    ('copy_reg', 'copyreg'),
    ('sklearn.externals.joblib.numpy_pickle', 'joblib.numpy_pickle'),
    ('numpy._core', 'numpy.core'),
    ('numpy._core.multiarray', 'numpy.core.multiarray'),
    ('numpy._core.numeric', 'numpy.core.numeric'),
    ('numpy.random._pickle', 'numpy.random'),
    ('scipy.sparse._csr', 'scipy.sparse.csr'),
    ('sklearn.cluster._kmeans', 'sklearn.cluster.k_means_'),
    ('sklearn.decomposition._incremental_pca', 'sklearn.decomposition.incremental_pca'),
    ('sklearn.decomposition._pca', 'sklearn.decomposition.pca'),
    ('sklearn.ensemble._bagging', 'sklearn.ensemble.bagging'),
    ('sklearn.ensemble._forest', 'sklearn.ensemble.forest'),
    ('sklearn.ensemble._gb', 'sklearn.ensemble.gradient_boosting',
        ('GradientBoostingClassifier', 'GradientBoostingRegressor')),
    ('sklearn.ensemble._gb_losses', 'sklearn.ensemble.gradient_boosting',
        ('BinomialDeviance', 'ExponentialLoss', 'MultinomialDeviance')),
    ('sklearn.ensemble._voting', 'sklearn.ensemble.voting_classifier'),
    ('sklearn.linear_model._base', 'sklearn.linear_model.base'),
    ('sklearn.linear_model._coordinate_descent', 'sklearn.linear_model.coordinate_descent'),
    ('sklearn.linear_model._logistic', 'sklearn.linear_model.logistic'),
    ('sklearn.linear_model._ridge', 'sklearn.linear_model.ridge'),
    ('sklearn.linear_model._stochastic_gradient', 'sklearn.linear_model.stochastic_gradient'),
    ('sklearn.linear_model._sgd_fast', 'sklearn.linear_model.sgd_fast'),
    ('sklearn.neighbors._classification', 'sklearn.neighbors.classification'),
    ('sklearn.neighbors._regression', 'sklearn.neighbors.regression'),
    ('sklearn.neighbors._dist_metrics', 'sklearn.neighbors.dist_metrics'),
    ('sklearn.neighbors._kd_tree', 'sklearn.neighbors.kd_tree'),
    ('sklearn.neural_network._multilayer_perceptron', 'sklearn.neural_network.multilayer_perceptron'),
    ('sklearn.preprocessing._data', 'sklearn.preprocessing.data'),
    ('sklearn.preprocessing._label', 'sklearn.preprocessing.label'),
    ('sklearn.svm._classes', 'sklearn.svm.classes'),
    ('sklearn.tree._classes', 'sklearn.tree.tree'),
    ('sklearn.tree._criterion', 'sklearn.tree._tree', ('Gini', 'Entropy', 'MSE', 'FriedmanMSE')),
    ('sklearn.tree._splitter', 'sklearn.tree._tree', ('BestSplitter', 'PresortBestSplitter')),
    ('sklearn_pandas.dataframe_mapper', 'sklearn_pandas', ('DataFrameMapper',)),
]


def populate(builder: RegistryBuilder) -> RegistryBuilder:
    for module, name, strategy in TYPES:
        builder.register(module, name, strategy)

    names_by_module = collections.defaultdict(list)
    for module, name, _ in TYPES:
        names_by_module[module].append(name)

    for module, name, target_module, target_name in CLASS_ALIASES:
        builder.alias(module, name, target_module, target_name)
        names_by_module[module].append(name)

    for alias in MODULE_ALIASES:
        alias_module, module = alias[:2]
        names = alias[2] if len(alias) > 2 else names_by_module[module]
        for name in names:
            builder.alias(alias_module, name, module, name)

    return builder


# Built at import time, so it exists before any decode call can start.
DEFAULT_REGISTRY = populate(RegistryBuilder()).build()


def default_registry() -> TypeRegistry:
    """The registry with every type in this module, shared by all decode calls."""
    return DEFAULT_REGISTRY
